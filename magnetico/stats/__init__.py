"""Process-wide counters and their Prometheus text exposition."""