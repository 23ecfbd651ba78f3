"""Integration tests: real subprocesses, side processes and loopback sockets."""
