"""Export cgroup Pressure Stall Information as Prometheus metrics."""
