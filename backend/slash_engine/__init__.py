# Slash Negotiation Engine
