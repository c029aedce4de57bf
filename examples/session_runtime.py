"""Session Runtime -- typed sessions over a broker.

Runs the bounded counter protocol with one thread per role, then shows
the telemetry each session recorded.
"""

import logging
import threading

from sessionflow import Broker, BrokerConfig, ProtocolViolation, open_sessions
from sessionflow.patterns import bounded_counter

logging.basicConfig(level=logging.INFO, format="%(threadName)s %(name)s: %(message)s")

# =============================================================
# Open one session per role
# =============================================================
print("=== Bounded Counter ===")

counter_protocol = bounded_counter()
broker = Broker(BrokerConfig(default_timeout=5.0))
sessions = open_sessions(counter_protocol, broker)
for role, session in sessions.items():
    print(f"  {role.name}: {session!r}")

ROUNDS = 3


def run_counter() -> None:
    s = sessions["Counter"].enter()
    for i in range(ROUNDS):
        s = s.send(i)
        reply, s = s.receive()
        print(f"Counter got {reply}")
        s = s.select("continue" if i < ROUNDS - 1 else "stop")
    s.close()


def run_echo() -> None:
    s = sessions["Echo"].enter()
    while True:
        value, s = s.receive()
        s = s.send(value + 1)
        label, s = s.offer()
        if label == "stop":
            break
    s.close()


threads = [
    threading.Thread(target=run_counter, name="Counter"),
    threading.Thread(target=run_echo, name="Echo"),
]
for t in threads:
    t.start()
for t in threads:
    t.join()

print("\nCounter transitions:")
for step in sessions["Counter"].history():
    print(f"  {step.action:8} {step.from_state} -> {step.to_state}")

# =============================================================
# Violations are caught before anything reaches the wire
# =============================================================
print("\n=== Violations ===")

again = open_sessions(bounded_counter(), Broker())
echo = again["Echo"].enter()
try:
    echo.send(1)
except ProtocolViolation as e:
    print(f"Rejected: {e.message}")

print("\nSession runtime complete.")
