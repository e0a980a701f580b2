"""Authentication.

Learn: The gateway trusts two kinds of caller:
1. End users → JWT access token issued by the main application
2. The main application → shared broadcast API key

Login, refresh and social accounts live in the application, not here.
"""
