from decimal import Decimal

LAMPORTS_PER_SOL = 1_000_000_000

DEFAULT_DECIMALS = 9
MAX_DECIMALS = 9

# wallet balance required before a token creation is attempted
MIN_CREATION_BALANCE_SOL = Decimal("0.01")

RECONCILE_INTERVAL_S = 30.0
HISTORY_LIMIT = 10

ADDRESS_BYTES = 32
SECRET_KEY_BYTES = 64
