"""web3 backend for the certificate registry contract."""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from certanchor.common.config import CertAnchorSettings
from certanchor.ledger.schemas import LedgerAnchor

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

REGISTRY_ABI: list[dict[str, Any]] = [
    {
        "name": "issueCertificate",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "certificateId", "type": "string"},
            {"name": "studentName", "type": "string"},
            {"name": "courseName", "type": "string"},
            {"name": "instituteName", "type": "string"},
            {"name": "issueDate", "type": "uint256"},
            {"name": "certificateHash", "type": "string"},
        ],
        "outputs": [],
    },
    {
        "name": "verifyCertificate",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "certificateId", "type": "string"}],
        "outputs": [
            {"name": "studentName", "type": "string"},
            {"name": "courseName", "type": "string"},
            {"name": "instituteName", "type": "string"},
            {"name": "issueDate", "type": "uint256"},
            {"name": "certificateHash", "type": "string"},
            {"name": "isValid", "type": "bool"},
        ],
    },
    {
        "name": "getTotalCertificates",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]

VERIFY_FIELDS = (
    "subject_name",
    "course_name",
    "institute_name",
    "issued_at",
    "fingerprint",
    "is_valid",
)


class Web3LedgerBackend:
    """Talks to an EVM node over JSON-RPC through AsyncWeb3.

    Signs transactions locally when a private key is configured; otherwise
    transacts from the node's first unlocked account (local dev chains).
    """

    def __init__(self, settings: CertAnchorSettings):
        self.settings = settings
        self._w3 = None
        self._contract = None
        self._account = None

    def _web3(self):
        """Lazy-init AsyncWeb3."""
        if self._w3 is None:
            from web3 import AsyncHTTPProvider, AsyncWeb3

            self._w3 = AsyncWeb3(
                AsyncHTTPProvider(
                    self.settings.ledger_rpc_url,
                    request_kwargs={"timeout": self.settings.ledger_timeout},
                )
            )
        return self._w3

    def _registry(self):
        address = self.settings.ledger_contract_address.strip()
        if not address or address == ZERO_ADDRESS:
            return None
        if self._contract is None:
            w3 = self._web3()
            self._contract = w3.eth.contract(
                address=w3.to_checksum_address(address), abi=REGISTRY_ABI,
            )
        return self._contract

    async def block_number(self) -> int:
        return int(await self._web3().eth.block_number)

    async def contract_ready(self) -> bool:
        contract = self._registry()
        if contract is None:
            return False
        await contract.functions.getTotalCertificates().call()
        return True

    async def _sender(self) -> str:
        if self._account is None:
            key = self.settings.ledger_private_key.strip()
            if key:
                if not key.startswith("0x"):
                    key = "0x" + key
                self._account = self._web3().eth.account.from_key(key)
        if self._account is not None:
            return self._account.address
        accounts = await self._web3().eth.accounts
        if not accounts:
            raise RuntimeError("Ledger node exposes no unlocked accounts")
        return accounts[0]

    async def submit(self, anchor: LedgerAnchor) -> dict[str, Any]:
        """Send issueCertificate and wait for the receipt."""
        contract = self._registry()
        if contract is None:
            raise RuntimeError("No registry contract configured")
        w3 = self._web3()
        sender = await self._sender()
        call = contract.functions.issueCertificate(
            anchor.certificate_id,
            anchor.subject_name,
            anchor.course_name,
            anchor.issuer,
            int(anchor.issued_at.timestamp()),
            anchor.fingerprint,
        )
        tx_params = {
            "from": sender,
            "gas": self.settings.ledger_gas_limit,
            "gasPrice": self.settings.ledger_gas_price,
        }

        if self._account is not None:
            tx_params["nonce"] = await w3.eth.get_transaction_count(sender)
            tx = await call.build_transaction(tx_params)
            signed = self._account.sign_transaction(tx)
            raw = getattr(signed, "raw_transaction", None) or signed.rawTransaction
            tx_hash = await w3.eth.send_raw_transaction(raw)
        else:
            tx_hash = await call.transact(tx_params)
        logger.debug("Submitted %s, awaiting receipt", anchor.certificate_id)

        receipt = await w3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=self.settings.ledger_timeout,
        )
        if receipt.get("status", 1) != 1:
            raise RuntimeError(f"Transaction {tx_hash.hex()} reverted")
        return {
            "transaction_hash": _to_hex(receipt["transactionHash"]),
            "block_number": int(receipt["blockNumber"]),
            "gas_used": str(receipt["gasUsed"]),
        }

    async def lookup(self, certificate_id: str) -> Optional[dict[str, Any]]:
        """Call verifyCertificate; None when the contract has no record."""
        contract = self._registry()
        if contract is None:
            raise RuntimeError("No registry contract configured")
        result = await contract.functions.verifyCertificate(certificate_id).call()
        record = dict(zip(VERIFY_FIELDS, result))
        if is_empty_record(record):
            return None
        record["issued_at"] = datetime.fromtimestamp(int(record["issued_at"]), tz=timezone.utc).isoformat()
        return record


def is_empty_record(record: dict[str, Any]) -> bool:
    """Contracts answer unknown keys with a zeroed struct rather than an error."""
    name = record.get("subject_name") or ""
    if not record.get("is_valid"):
        return True
    return name.strip("\x00") == "" or set(name.removeprefix("0x")) <= {"0"}


def _to_hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        text = value.hex()
    elif hasattr(value, "hex"):
        text = value.hex()
    else:
        text = str(value)
    text = text.lower()
    return text if text.startswith("0x") else "0x" + text
