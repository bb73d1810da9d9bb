"""
Storefront email package.

Modules:
- client: ResendClient, the transactional mail provider over HTTP
- store: order confirmation template (HTML + subject)

Only the communications service sends mail; other services ask it to over
the internal API (see libs.common.service_client).
"""
