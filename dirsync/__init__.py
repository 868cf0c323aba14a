"""dirsync: identity provider directory synchronization.

Connects to an identity provider's REST API (Okta), walks paginated group and
membership listings, and folds them into a provider-agnostic user/group
directory, incrementally where the provider supports it.
"""

__version__ = "0.1.0"
