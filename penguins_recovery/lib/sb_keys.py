"""Custom Secure Boot key sets (PK, KEK, db) for firmware enrollment.

Enrollment itself happens in firmware setup mode and is out of scope; this
module only produces the files. Private keys are written to disk, so the
output directory is created 0700 and is never reused.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .capabilities import Capabilities
from .command import run_cmd

logger = logging.getLogger(__name__)

REQUIRED_TOOLS = ("openssl", "cert-to-efi-sig-list", "sign-efi-sig-list")

CERT_DAYS = 3650
KEY_BITS = 2048

MICROSOFT_CERTS: Dict[str, str] = {
    "ms-prod": "https://www.microsoft.com/pkiops/certs/MicWinProPCA2011_2011-10-19.crt",
    "ms-uefi": "https://www.microsoft.com/pkiops/certs/MicCorUEFCA2011_2011-06-27.crt",
}

SENSITIVE_NOTICE = """This directory contains Secure Boot PRIVATE KEYS (PK.key, KEK.key, db.key).
Anyone holding them can sign code your firmware will trust.
Store it offline, restrict access, and delete copies you do not need.
"""

# (name, common name, signer): each .auth is signed by the level above.
HIERARCHY = (
    ("PK", "Platform Key", "PK"),
    ("KEK", "Key Exchange Key", "PK"),
    ("db", "Signature Database", "KEK"),
)


@dataclass
class SecureBootArtifactSet:
    key_dir: Path
    guid: str
    keys: Dict[str, Path] = field(default_factory=dict)
    certs: Dict[str, Path] = field(default_factory=dict)
    esls: Dict[str, Path] = field(default_factory=dict)
    auths: Dict[str, Path] = field(default_factory=dict)
    db_pem: Optional[Path] = None
    microsoft: List[Path] = field(default_factory=list)

    @property
    def sensitive(self) -> bool:
        return bool(self.keys)


def new_key_dir(base_dir: Path, *, now: Optional[datetime] = None) -> Path:
    """Create secureboot-keys-<timestamp>/ (0700); an existing one is an error."""

    stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
    d = base_dir / f"secureboot-keys-{stamp}"
    base_dir.mkdir(parents=True, exist_ok=True)
    d.mkdir(mode=0o700)
    d.chmod(0o700)
    return d


def make_cert(key_dir: Path, name: str, common_name: str) -> None:
    run_cmd(
        [
            "openssl",
            "req",
            "-new",
            "-x509",
            "-newkey",
            f"rsa:{KEY_BITS}",
            "-sha256",
            "-days",
            str(CERT_DAYS),
            "-nodes",
            "-subj",
            f"/CN=Penguins Recovery {common_name}/",
            "-keyout",
            str(key_dir / f"{name}.key"),
            "-out",
            str(key_dir / f"{name}.crt"),
        ]
    )
    (key_dir / f"{name}.key").chmod(0o600)


def to_esl(guid: str, cert: Path, esl: Path) -> None:
    run_cmd(["cert-to-efi-sig-list", "-g", guid, str(cert), str(esl)])


def sign_esl(guid: str, key_dir: Path, signer: str, var: str, esl: Path, auth: Path) -> None:
    run_cmd(
        [
            "sign-efi-sig-list",
            "-g",
            guid,
            "-k",
            str(key_dir / f"{signer}.key"),
            "-c",
            str(key_dir / f"{signer}.crt"),
            var,
            str(esl),
            str(auth),
        ]
    )


def add_microsoft_keys(artifacts: SecureBootArtifactSet) -> bool:
    """Fetch Microsoft's CAs and write db-with-ms.auth; failures only warn."""

    kd = artifacts.key_dir
    ms_dir = kd / "microsoft"
    ms_dir.mkdir(exist_ok=True)
    logger.info("Downloading Microsoft UEFI CA certificates...")

    esls: List[Path] = []
    for name, url in MICROSOFT_CERTS.items():
        der = ms_dir / f"{name}.crt"
        pem = ms_dir / f"{name}.pem"
        if not run_cmd(["curl", "-fsSL", "-o", str(der), url], check=False).ok:
            logger.warning("Could not download %s", url)
            continue
        # Published as DER; fall back to using the file as-is if it is already PEM.
        if not run_cmd(["openssl", "x509", "-inform", "DER", "-in", str(der), "-out", str(pem)], check=False).ok:
            pem.write_bytes(der.read_bytes())
        esl = ms_dir / f"{name}.esl"
        if run_cmd(["cert-to-efi-sig-list", "-g", artifacts.guid, str(pem), str(esl)], check=False).ok:
            esls.append(esl)
            artifacts.microsoft.append(pem)
        else:
            logger.warning("Could not convert %s to an EFI signature list", der.name)

    if not esls:
        logger.warning("No Microsoft certificates available; db-with-ms.auth not created.")
        return False

    combined = kd / "db-with-ms.esl"
    with combined.open("wb") as out:
        for part in [artifacts.esls["db"], *esls]:
            out.write(part.read_bytes())
    auth = kd / "db-with-ms.auth"
    sign_esl(artifacts.guid, kd, "KEK", "db", combined, auth)
    artifacts.auths["db-with-ms"] = auth
    logger.info("Combined db created: %s", str(auth))
    logger.info("Use this instead of db.auth to allow Microsoft-signed binaries.")
    return True


def generate_key_set(
    base_dir: str | Path,
    caps: Capabilities,
    *,
    with_microsoft: bool = False,
    now: Optional[datetime] = None,
    new_guid: Callable[[], str] = lambda: str(uuid.uuid4()),
) -> SecureBootArtifactSet:
    for tool in REQUIRED_TOOLS:
        caps.require(tool, "install efitools and openssl")
    if with_microsoft:
        caps.require("curl", "needed to download the Microsoft certificates")

    kd = new_key_dir(Path(base_dir), now=now)
    guid = new_guid()
    (kd / "GUID.txt").write_text(f"{guid}\n", encoding="utf-8")
    logger.info("Generating custom Secure Boot keys in %s", str(kd))
    logger.info("Owner GUID: %s", guid)

    artifacts = SecureBootArtifactSet(key_dir=kd, guid=guid)
    for name, cn, signer in HIERARCHY:
        logger.info("Creating %s (%s)...", name, cn)
        make_cert(kd, name, cn)
        artifacts.keys[name] = kd / f"{name}.key"
        artifacts.certs[name] = kd / f"{name}.crt"

        esl = kd / f"{name}.esl"
        to_esl(guid, artifacts.certs[name], esl)
        artifacts.esls[name] = esl

        auth = kd / f"{name}.auth"
        sign_esl(guid, kd, signer, name, esl, auth)
        artifacts.auths[name] = auth

    # sbsign reads PEM; openssl req already emits PEM, so this is a copy.
    db_pem = kd / "db.pem"
    db_pem.write_bytes(artifacts.certs["db"].read_bytes())
    artifacts.db_pem = db_pem

    if with_microsoft:
        add_microsoft_keys(artifacts)

    (kd / "SENSITIVE-README.txt").write_text(SENSITIVE_NOTICE, encoding="utf-8")
    logger.warning("%s holds private Secure Boot keys; keep it offline and access-restricted.", str(kd))
    logger.info("Use --sb-key-dir %s with penguins-adapter --secureboot to sign with db.key.", str(kd))
    return artifacts

