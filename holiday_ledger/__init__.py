"""HolidayLedger — shared-expense ledger service for holiday plans."""
