"""Temporal client factory.

Creates connections to Temporal (Cloud or a local dev server) using
credentials from the environment.
"""

import os
from pathlib import Path

# Load .env file if it exists
from dotenv import load_dotenv
env_path = Path(__file__).resolve().parent / ".env"
if env_path.exists():
    load_dotenv(env_path)

from temporalio.client import Client, TLSConfig


async def get_temporal_client() -> Client:
    """Create and return a Temporal client.
    
    Reads configuration from environment variables:
    - TEMPORAL_ENDPOINT: Endpoint (e.g., "temporal.example.com:7233")
    - TEMPORAL_NAMESPACE: Namespace (e.g., "default")
    - TEMPORAL_API_KEY: API key for Temporal Cloud (omit for a local dev server)
    - TEMPORAL_CERT_PATH: Client certificate for mTLS (optional)
    - TEMPORAL_KEY_PATH: Private key for the client certificate (optional)
    
    Returns:
        Connected Temporal client
        
    Raises:
        ValueError: If TEMPORAL_ENDPOINT is missing
    """
    endpoint = os.getenv("TEMPORAL_ENDPOINT")
    namespace = os.getenv("TEMPORAL_NAMESPACE", "default")
    api_key = os.getenv("TEMPORAL_API_KEY")
    cert_path = os.getenv("TEMPORAL_CERT_PATH")
    key_path = os.getenv("TEMPORAL_KEY_PATH")
    
    if not endpoint:
        raise ValueError(
            "TEMPORAL_ENDPOINT environment variable not set. "
            "Set to your Temporal endpoint (e.g., 'localhost:7233' or 'temporal.example.com:7233')"
        )
    
    if cert_path:
        # mTLS with a client certificate
        tls = TLSConfig(
            client_cert=Path(cert_path).read_bytes(),
            client_private_key=Path(key_path).read_bytes() if key_path else None,
        )
        return await Client.connect(endpoint, namespace=namespace, tls=tls)
    
    if api_key:
        # Temporal Cloud API key auth requires TLS with system certificates
        return await Client.connect(endpoint, namespace=namespace, tls=True, api_key=api_key)
    
    # Local dev server
    return await Client.connect(endpoint, namespace=namespace)
