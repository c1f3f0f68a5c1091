"""Paper equity trading desk: ledger, guardrails, trade plans and the robo trader."""
