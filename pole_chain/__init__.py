"""
Pole Chain Fault Localization & Isolation

node/          - per-pole runtime (sensors, relays, state machine, watchdog)
data_gateway/  - node-side link to the arbiter (REST or in-process)
backend/       - coordination arbiter (FastAPI)
"""
