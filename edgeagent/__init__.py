"""nginx configuration and reload agent for domains, stream load balancers and access lists"""

__version__ = "1.0.0"
