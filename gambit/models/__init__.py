from .network import (
    PolicyNet,
    PolicyNetConfig,
    TorchPolicy,
    build_policy_net,
    make_torch_policy,
    torch_seed_scope,
)

__all__ = [
    "PolicyNet",
    "PolicyNetConfig",
    "TorchPolicy",
    "build_policy_net",
    "make_torch_policy",
    "torch_seed_scope",
]
