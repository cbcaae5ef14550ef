"""Shell adapters — the process executor and the SSH remote shell."""
