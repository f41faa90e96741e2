"""Gmail credentials, API client, paginator and body decoder"""
