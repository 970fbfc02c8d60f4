from prometheus_client import Counter, Histogram

PROVIDER_CALLS    = Counter("provider_calls_total", "Provider calls by outcome", ["provider_class", "outcome"])
PROVIDER_LATENCY  = Histogram("provider_call_seconds", "Provider call latency", ["provider_class"])
CACHE_LOOKUPS     = Counter("cache_lookups_total", "Cache lookups", ["category", "result"])
SYNTHESIS_TIER    = Counter("synthesis_tier_total", "Reports produced per synthesis tier", ["tier"])
RUNS_COMPLETED    = Counter("research_runs_total", "Completed research runs", ["mode", "terminated_early"])
