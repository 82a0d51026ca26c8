"""
iotaccess - Device-credential access to cloud services

Turns a device private key into short-lived bearer tokens and uses them
to reach storage, pub/sub and device commands without ambient cloud
credentials.

Architecture:
- Each module is self-contained with clear interfaces
- Collaborators (HTTP client, clocks, MQTT client) are injected
- No credential is cached or reused across flows

Modules:
- credentials: Signed assertions, token exchanges, the access token flow
- resources: Storage, pub/sub and command calls made with a bearer token
- messaging: MQTT bridge client and bounded subscriptions
- registry: Device manager client for provisioning and device state
- api: Wire models shared by every remote call
"""

__version__ = "1.0.0"
