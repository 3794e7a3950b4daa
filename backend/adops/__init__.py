"""
adops - advertising-operations sales pipeline

Campaign and order state machines, inventory slot counters and the
trigger / condition / action rule engine that reacts to workflow events.
"""
