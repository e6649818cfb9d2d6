"""Gunicorn configuration file with secret loading for the provisioning API.

Directory and Exchange calls block for the duration of a network round trip,
so requests run on gthread worker threads; the arbiter and the accepting
thread never execute provisioning work.

Secret Loading Priority (post_fork hook):
1. /run/secrets (Docker secrets - cached from Azure Key Vault or mounted locally)
   → No live Azure connection needed in workers

2. Azure Key Vault direct access (fallback)
   → Only triggered if /run/secrets is empty AND AZURE_USE_KEYVAULT=true
   → Requires live Azure authentication (DefaultAzureCredential)

Secrets handled: AD service account password, SMTP password, audit signing key.
"""
import os

bind = os.environ.get("GUNICORN_BIND", "0.0.0.0:8000")
worker_class = "gthread"
workers = int(os.environ.get("GUNICORN_WORKERS", "2"))
threads = int(os.environ.get("GUNICORN_THREADS", "8"))
# Exchange remote PowerShell calls can take tens of seconds
timeout = int(os.environ.get("GUNICORN_TIMEOUT", "120"))


def post_fork(server, worker):
    """
    Called just after a worker has been forked, before the app is imported.
    
    Priority for secret loading:
    1. /run/secrets (Docker secrets - already loaded from Azure KV or generated)
    2. Azure Key Vault direct access (fallback)
    
    This design allows AZURE_USE_KEYVAULT=true to work with cached secrets
    without requiring live Azure connection in every worker.
    """
    # Enforce DEMO_MODE consistency: Demo mode must never use Azure Key Vault
    demo_mode = os.environ.get("DEMO_MODE", "false").lower() == "true"
    if demo_mode and os.environ.get("AZURE_USE_KEYVAULT", "false").lower() == "true":
        worker.log.warning("DEMO_MODE=true requires AZURE_USE_KEYVAULT=false (runtime guard)")
        worker.log.info("Forcing AZURE_USE_KEYVAULT=false")
        os.environ["AZURE_USE_KEYVAULT"] = "false"
    
    # Check if secrets are already available in /run/secrets (Docker mount)
    from pathlib import Path
    secrets_dir = Path("/run/secrets")
    if secrets_dir.exists() and secrets_dir.is_dir():
        secret_files = list(secrets_dir.glob("*"))
        if secret_files:
            worker.log.info(f"Found {len(secret_files)} secrets in /run/secrets (using cached secrets)")
            # Secrets already loaded by settings.py, no need to reload from Azure KV
            return
    
    # Fallback: Load from Azure Key Vault if enabled and /run/secrets not available
    use_kv = os.environ.get("AZURE_USE_KEYVAULT", "false").lower() == "true"
    if not use_kv:
        worker.log.info("Skipping Azure Key Vault direct access (AZURE_USE_KEYVAULT=false)")
        return
    
    try:
        from azure.identity import DefaultAzureCredential
        from azure.keyvault.secrets import SecretClient
    except ImportError:
        worker.log.error("Azure Key Vault requested but azure-keyvault-secrets not installed")
        return
    
    vault_name = os.environ.get("AZURE_KEY_VAULT_NAME")
    if not vault_name:
        worker.log.error("AZURE_KEY_VAULT_NAME required when AZURE_USE_KEYVAULT=true")
        return
    
    vault_uri = f"https://{vault_name}.vault.azure.net"
    credential = DefaultAzureCredential()
    secret_client = SecretClient(vault_url=vault_uri, credential=credential)
    
    # Map environment variables to Key Vault secret names
    secret_mapping = {
        "AD_SERVICE_ACCOUNT_PASSWORD": os.environ.get(
            "AZURE_SECRET_AD_SERVICE_ACCOUNT_PASSWORD", "ad-service-account-password"
        ),
        "SMTP_PASSWORD": os.environ.get("AZURE_SECRET_SMTP_PASSWORD", "smtp-password"),
        "AUDIT_LOG_SIGNING_KEY": os.environ.get("AZURE_SECRET_AUDIT_LOG_SIGNING_KEY", "audit-log-signing-key"),
    }
    
    for env_name, secret_name in secret_mapping.items():
        if os.environ.get(env_name):  # Skip if already set
            continue
        secret_name = secret_name.strip()
        if not secret_name:
            continue
        try:
            secret = secret_client.get_secret(secret_name)
            os.environ[env_name] = secret.value
            worker.log.info(f"Loaded secret '{secret_name}' into {env_name}")
        except Exception as exc:
            worker.log.error(f"Failed to load secret '{secret_name}': {exc}")
    
    worker.log.info("Azure Key Vault secrets loaded successfully")
