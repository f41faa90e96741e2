"""Errors, retry policy and the SQLite database layer"""
