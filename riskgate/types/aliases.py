
# -------- Aliases (clarify intent) --------
UnixMillis = int
Ticker = str
