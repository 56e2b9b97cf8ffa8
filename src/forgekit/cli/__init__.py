"""forge and test-report command line interfaces."""
