"""HTTP client with round-tripper middlewares, redirect handling and body I/O guards."""