"""
PoP Party Protocol Constants

Contract identifiers, wire sizes and domain separation tags.
All multi-byte integers are BIG-ENDIAN unless noted.
"""

# ==============================================================================
# Protocol
# ==============================================================================

PROTOCOL_VERSION = 1

BIG_ENDIAN = "big"
LITTLE_ENDIAN = "little"

# ==============================================================================
# Sizes
# ==============================================================================

HASH_SIZE = 32
INSTANCE_ID_SIZE = 32
POINT_SIZE = 32
SCALAR_SIZE = 32
ED25519_SIGNATURE_SIZE = 64

# Ed25519 group order L
CURVE_ORDER = 2**252 + 27742317777372353535851937790883648493

# ==============================================================================
# Contracts and commands
# ==============================================================================

CONTRACT_POP_PARTY = "popParty"
CONTRACT_DARC = "darc"
CONTRACT_CREDENTIAL = "credential"
CONTRACT_COIN = "coin"

CMD_BARRIER = "barrier"
CMD_FINALIZE = "finalize"
CMD_MINE = "mine"

# Commands accepted without any signer: the ring signature is the authorization
ANONYMOUS_COMMANDS = frozenset({CMD_MINE})

# Access rule actions
RULE_SPAWN_PARTY = "spawn:" + CONTRACT_POP_PARTY
RULE_INVOKE_BARRIER = "invoke:" + CONTRACT_POP_PARTY + "." + CMD_BARRIER
RULE_INVOKE_FINALIZE = "invoke:" + CONTRACT_POP_PARTY + "." + CMD_FINALIZE

# Instruction arguments
ARG_DESCRIPTION = "description"
ARG_RULE_ID = "ruleID"
ARG_MINING_REWARD = "miningReward"
ARG_ATTENDEES = "attendees"
ARG_LRS = "lrs"
ARG_TAG = "tag"
ARG_REWARD_TARGET = "rewardTarget"
# Access rule of a new reward coin, used when rewardTarget is absent
ARG_NEW_RULE = "newDarc"

# Credential attribute holding the personhood key
CREDENTIAL_GROUP_PERSONHOOD = "personhood"
CREDENTIAL_ATTR_ED25519 = "ed25519"

# ==============================================================================
# Mining
# ==============================================================================

MINE_MESSAGE = b"mine"
MINE_ACTION = b"mine"

# ==============================================================================
# Domain separation tags
# ==============================================================================

DOMAIN_HASH_TO_POINT = b"PoPParty_HashToPoint_v1"
DOMAIN_LINK_BASE = b"PoPParty_LinkBase_v1"
DOMAIN_RING_SIG = b"PoPParty_RingSig_v1"
DOMAIN_INSTRUCTION = b"PoPParty_Instruction_v1"
DOMAIN_TRANSACTION = b"PoPParty_Transaction_v1"
DOMAIN_STATE_LEAF = b"PoPParty_StateLeaf_v1"
DOMAIN_CREDENTIAL_ID = b"credential"
DOMAIN_COIN_ID = b"coin"

# Try-and-increment attempts for hash_to_point
HASH_TO_POINT_ATTEMPTS = 1024

# ==============================================================================
# Client defaults
# ==============================================================================

DEFAULT_RPC_URL = "http://127.0.0.1:7770"
DEFAULT_RPC_TIMEOUT_SEC = 10.0
DEFAULT_RPC_MAX_RETRIES = 3
DEFAULT_RPC_RETRY_BACKOFF_SEC = 0.5
