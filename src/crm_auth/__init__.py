"""OAuth 2.0 credential lifecycle for Salesforce and HubSpot connections."""

__version__ = "0.1.0"
