"""Core trading engine logic: grid ladders, indicators, signals and positions.

This package contains pure business logic with no I/O dependencies
(no database, exchange, or network access). Collaborators are injected
through the protocols in core.ports so the same engine runs against the
paper adapters, the exchange adapters and the test doubles in app/.
"""
