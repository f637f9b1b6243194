"""Core domain, ports and orchestration; free of any concrete tool integration."""
