"""
afip_ws: client for the Argentine tax authority's SOAP web services.

Authenticates with a certificate (WSAA), looks up taxpayers in the
registry (Padron A5), queries invoice sequences and obtains fiscal
authorization codes (WSFEv1), and renders the compliance QR payload.

Built on the Railway-Oriented Programming (ROP) framework for
explicit, composable, functional error handling.
"""

__version__ = "0.1.0"
