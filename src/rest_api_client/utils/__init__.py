"""Utility modules for the REST API client.

- ``http``: retry policy, configuration guard, cancellation, connection pools
- ``codec``: body serialization and decode strategies
- ``security``: log sanitization
- ``http_client``: the :class:`ApiClient` dispatcher
"""
