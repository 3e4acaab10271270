#!/usr/bin/env python3
# Container entry point: serves the API on 0.0.0.0:$PORT (default 8080).
from birdsong.serve import main

if __name__ == "__main__":
    main()
