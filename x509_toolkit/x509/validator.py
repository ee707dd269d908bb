"""
Tri-state certificate validation.

Each check runs independently and problems are collected in ``errors``
instead of being raised, so a caller always gets a partial answer.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from .engine import CryptoEngine, Verdict
from .errors import MissingInputError
from .parser import Certificate

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    time_valid: bool
    signature_valid: Verdict
    chain_valid: Optional[Verdict] = None
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'time_valid': self.time_valid,
            'signature_valid': self.signature_valid.value,
            'chain_valid': self.chain_valid.value if self.chain_valid is not None else None,
            'errors': list(self.errors),
        }


def verify_link(engine: CryptoEngine, child: Certificate, parent: Certificate) -> Verdict:
    """Check that ``parent``'s key signed ``child``."""
    if parent.public_key is None:
        return Verdict.UNKNOWN
    return engine.verify(parent.public_key, child.signature_algorithm_oid, child.signature, child.tbs)


def _describe_failure(verdict: Verdict, child: Certificate, parent: Certificate) -> Optional[str]:
    if verdict is Verdict.TRUE:
        return None
    if verdict is Verdict.UNKNOWN:
        return (f"Could not verify the signature of {child.subject} "
                f"({child.signature_algorithm_name} with the key of {parent.subject}).")
    return f"Signature of {child.subject} does not verify against {parent.subject}."


def check_time(certificate: Certificate, now: datetime) -> Optional[str]:
    if now < certificate.not_before:
        return f"Certificate is not yet valid (valid from {certificate.not_before.isoformat()})."
    if now > certificate.not_after:
        return f"Certificate has expired (valid until {certificate.not_after.isoformat()})."
    return None


def validate(engine: CryptoEngine, chain: Sequence[Certificate],
             ca_bundle: Optional[Sequence[Certificate]] = None,
             now: Optional[datetime] = None) -> ValidationResult:
    """
    Validate a chain, leaf first.

    Args:
        engine: Crypto engine used for signature checks
        chain: Parsed certificates, leaf first
        ca_bundle: Trusted roots; chain_valid stays None when omitted
        now: Reference time, defaults to the current UTC time

    Returns:
        ValidationResult with every step filled in

    Raises:
        MissingInputError: If the chain is empty
    """
    if not chain:
        raise MissingInputError("At least one certificate is required for validation.")
    now = now or datetime.now(timezone.utc)
    errors = []
    leaf = chain[0]

    # Validity window
    time_error = check_time(leaf, now)
    if time_error:
        errors.append(time_error)

    # Leaf signature
    parent = chain[1] if len(chain) > 1 else leaf
    signature_valid = verify_link(engine, leaf, parent)
    failure = _describe_failure(signature_valid, leaf, parent)
    if failure:
        errors.append(failure)

    # Chain against the trusted bundle
    chain_valid = None
    if ca_bundle is not None:
        verdicts = []
        for child, issuer in zip(chain, chain[1:]):
            verdict = verify_link(engine, child, issuer)
            verdicts.append(verdict)
            failure = _describe_failure(verdict, child, issuer)
            if failure and child is not leaf:
                errors.append(failure)

        root = chain[-1]
        anchors = [verify_link(engine, root, anchor) for anchor in ca_bundle]
        if not anchors:
            root_verdict = Verdict.UNKNOWN
            errors.append("The CA bundle contains no certificates.")
        elif any(v is Verdict.TRUE for v in anchors):
            root_verdict = Verdict.TRUE
        elif any(v is Verdict.UNKNOWN for v in anchors):
            root_verdict = Verdict.UNKNOWN
            errors.append(f"Could not verify {root.subject} against the CA bundle.")
        else:
            root_verdict = Verdict.FALSE
            errors.append(f"{root.subject} is not signed by any certificate in the CA bundle.")
        verdicts.append(root_verdict)
        chain_valid = Verdict.combine(verdicts)

    result = ValidationResult(time_valid=time_error is None, signature_valid=signature_valid,
                              chain_valid=chain_valid, errors=errors)
    logger.info(f"Validated {leaf.subject}: time={result.time_valid} "
                f"signature={signature_valid.value} chain={chain_valid.value if chain_valid is not None else None}")
    return result
