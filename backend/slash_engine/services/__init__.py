# Slash Negotiation Engine Services
