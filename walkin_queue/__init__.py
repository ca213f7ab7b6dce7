"""Walk-in service queue engine (MQTT-based).

Users request a sequential ticket for a service, staff at counters call and
serve tickets in order, and observers follow live updates over MQTT:
- a Queue Service (state machine + store + broadcaster)
- Counter agents operated by staff
- Ticket clients for walk-in users

Run `walkin-queue manager --services services.example.json`, then start
counters (`walkin-queue counter`) and ticket clients (`walkin-queue ticket`).
"""

__version__ = "0.1.0"
