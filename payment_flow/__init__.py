"""
Bank-Transfer Payment Flow

Client-side lifecycle manager for bank-transfer payments in the room bill tracker:
1. A state machine that opens, confirms and cancels a server-held transaction
2. An abandonment guard that never leaves a transaction pending when the user walks away
3. REST clients for the transaction gateway and the payment method catalog
"""

__version__ = "0.1.0"
