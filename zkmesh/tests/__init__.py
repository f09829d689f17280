"""
Tests Module: Unit and Integration Tests

Test Coverage:
    - Core types (Event, Stat, ACL helpers, Result)
    - Error hierarchy and configuration
    - Event streams, watch registry and dispatcher
    - Sessions, node operations and RetryChange against InMemoryRuntime
    - KazooRuntime translation against mocked kazoo clients
"""
