# Analytical engines — Strat classification, FTC orchestration, signal scoring
