"""tenant-vault: multi-tenant secrets with federated workload identity.

Workloads exchange a signed identity assertion for a session bound to
exactly one tenant domain, then use that session to read and write the
domain's static secrets and to lease short-lived backend credentials.

Structure:
    app.py          Wiring from AppConfig and background tasks
    security/auth/  Identity assertion verification (live and offline)
    pips/auth/      Claim binding and session issuance
    pdp/            Capability rules, resolution and evaluation
    pep/            Secret store enforcement point
    storage/        Versioned key/value storage
    broker/         Dynamic credential leases
    state/          Tenant registry and durable state
    telemetry/      Audit and system logging
"""

__version__ = "0.1.0"
