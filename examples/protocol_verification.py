"""Protocol Verification -- Multiparty Session Types.

Demonstrates validation, projection, duality and property checks.
"""

from sessionflow import (
    Participant,
    ProtocolValidator,
    choice,
    end,
    msg,
    protocol,
    rec,
    var,
    verify_dual,
)
from sessionflow.patterns import logged_request, ping_pong
from sessionflow.properties import ProtocolSpecification, RoundTripExecutability

# =============================================================
# Validate and project a request-response protocol
# =============================================================
print("=== Ping-Pong Protocol ===")

pp = ping_pong()
print(f"Protocol: {pp}")

client_type = pp.project("Client")
server_type = pp.project("Server")
print(f"Client view: {client_type!r}")
print(f"Server view: {server_type!r}")
print(f"Dual: {verify_dual(client_type, server_type)}")

result = pp.validate()
print(f"Well-formed: {result.is_valid}")

# =============================================================
# A third role that only sees the last message
# =============================================================
print("\n=== Logged Request ===")

logged = logged_request()
for role, local in logged.project_all().items():
    print(f"  {role.name}: {local!r}")

# =============================================================
# Build a looping protocol manually
# =============================================================
print("\n=== Custom Multi-Party Protocol ===")

# Buyer repeatedly orders; the seller notifies the shipper each time
shop = protocol(
    "Shop",
    ["Buyer", Participant("Seller", "S"), "Shipper"],
    rec(
        "Shop",
        choice(
            "Buyer",
            {
                "order": msg("Buyer", "S", "str", msg("S", "Shipper", "str", var("Shop"))),
                "quit": msg("Buyer", "S", "str", end()),
            },
        ),
    ),
)
for role, local in shop.project_all().items():
    print(f"  {role.name}: {local!r}")

spec = ProtocolSpecification([RoundTripExecutability(max_steps=20)])
print(spec.summary(shop))

# =============================================================
# Diagnostics for a broken protocol
# =============================================================
print("\n=== Broken Protocol ===")

broken = protocol(
    "Broken",
    ["Client", "Server", "Client"],
    msg("Client", "Client", "str", msg("Server", "Client", "Unknown", var("Retry"))),
)
result = ProtocolValidator().validate(broken)
print(f"Well-formed: {result.is_valid}")
for diagnostic in result.diagnostics:
    print(f"  {diagnostic}")

print("\nProtocol verification complete.")
