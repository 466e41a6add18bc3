"""Transport security (TLS + SASL) for the kafka-python clients.

The mechanism is chosen once, from settings, when the client kwargs are
built; collection code never looks at it.
* TLS: CA bundle, optional client cert/key pair, optional insecure mode.
* SASL: PLAIN, SCRAM-SHA-256/512 and GSSAPI (keytab or credential cache).
"""
from __future__ import annotations

import logging
import os
import ssl
from typing import Any, Dict

from kafka_exporter.core.config import KerberosAuthType, SaslMechanism, Settings
from kafka_exporter.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

_KAFKA_MECHANISMS = {
    SaslMechanism.PLAIN: "PLAIN",
    SaslMechanism.SCRAM_SHA256: "SCRAM-SHA-256",
    SaslMechanism.SCRAM_SHA512: "SCRAM-SHA-512",
    SaslMechanism.GSSAPI: "GSSAPI",
}


def _can_read(path: str | None) -> bool:
    if not path:
        return False
    try:
        with open(path, "rb"):
            return True
    except OSError:
        return False


def can_read_cert_and_key(cert_path: str | None, key_path: str | None) -> bool:
    """
    True if both files are readable, False if neither is.

    Raises
    ------
    ConfigurationError
        If only one half of the pair can be read.
    """
    cert_ok = _can_read(cert_path)
    key_ok = _can_read(key_path)
    if not cert_ok and not key_ok:
        return False
    if not cert_ok:
        raise ConfigurationError(
            f"error reading {cert_path}, certificate and key must be supplied as a pair")
    if not key_ok:
        raise ConfigurationError(
            f"error reading {key_path}, certificate and key must be supplied as a pair")
    return True


def build_ssl_context(settings: Settings) -> ssl.SSLContext:
    ctx = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)
    if settings.tls_ca_file:
        try:
            ctx.load_verify_locations(cafile=settings.tls_ca_file)
        except (OSError, ssl.SSLError) as exc:
            raise ConfigurationError(f"cannot load CA file {settings.tls_ca_file}: {exc}") from exc
    if can_read_cert_and_key(settings.tls_cert_file, settings.tls_key_file):
        try:
            ctx.load_cert_chain(certfile=settings.tls_cert_file, keyfile=settings.tls_key_file)
        except (OSError, ssl.SSLError) as exc:
            raise ConfigurationError(f"cannot load client certificate: {exc}") from exc
    if settings.tls_insecure_skip_tls_verify:
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
    return ctx


def _sasl_kwargs(settings: Settings) -> Dict[str, Any]:
    mechanism = settings.sasl_mechanism
    kw: Dict[str, Any] = {"sasl_mechanism": _KAFKA_MECHANISMS[mechanism]}
    if not settings.sasl_handshake:
        logger.warning("SASL handshake cannot be disabled with kafka-python; ignoring sasl_handshake=false")

    if mechanism is SaslMechanism.GSSAPI:
        kw["sasl_kerberos_service_name"] = settings.sasl_service_name or "kafka"
        if settings.sasl_kerberos_config_path:
            os.environ["KRB5_CONFIG"] = settings.sasl_kerberos_config_path
        if settings.sasl_kerberos_auth_type is KerberosAuthType.KEYTAB:
            if not _can_read(settings.sasl_keytab_path):
                raise ConfigurationError(f"cannot read keytab {settings.sasl_keytab_path!r}")
            os.environ["KRB5_CLIENT_KTNAME"] = settings.sasl_keytab_path
        else:
            logger.info("GSSAPI user auth: using the Kerberos credential cache for %s@%s",
                        settings.sasl_username or "<default>", settings.sasl_realm or "<default realm>")
        return kw

    if settings.sasl_username:
        kw["sasl_plain_username"] = settings.sasl_username
    if settings.sasl_password:
        kw["sasl_plain_password"] = settings.sasl_password
    return kw


def client_security_kwargs(settings: Settings) -> Dict[str, Any]:
    """Return the security-related kwargs shared by admin and consumer clients."""
    if settings.sasl_enabled:
        protocol = "SASL_SSL" if settings.tls_enabled else "SASL_PLAINTEXT"
    else:
        protocol = "SSL" if settings.tls_enabled else "PLAINTEXT"

    kw: Dict[str, Any] = {"security_protocol": protocol}
    if settings.sasl_enabled:
        kw.update(_sasl_kwargs(settings))
    if settings.tls_enabled:
        kw["ssl_context"] = build_ssl_context(settings)
    return kw
