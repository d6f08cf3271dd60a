"""Committee engine: multi-evaluator consensus decisions with calibrated trust weights."""
