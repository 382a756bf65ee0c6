# scripts/gen_keystore.py
"""
Create an RSA key + self-signed X.509 certificate and store them in a JKS keystore.
Reads build/config.json (falls back to built-in defaults). Writes:
  build/<name>-YYYYMMDD-HHMMSS.jks   (private)  -- DO NOT COMMIT
  build/<name>-YYYYMMDD-HHMMSS.txt   (report, contains passwords unless --redact-passwords)
Usage: python scripts/gen_keystore.py [-c build/config.json] [--redact-passwords]
"""
import sys, os
# Add project root to Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from apkcert.cli import main

if __name__ == "__main__":
    sys.exit(main())
