DB_SCHEMA = "tradeledger"
