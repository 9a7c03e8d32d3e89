import pytest

from tronrelay.types import (
    ZERO_DIGEST,
    ZERO_TIME,
    BillingDetails,
    ContractConfig,
    ContractConfigDetails,
    NewTransmissionEvent,
    OffchainContractConfig,
    RoundData,
    TransmissionDetails,
)


def test_default_digests_are_zero():
    assert OffchainContractConfig().config_digest == bytes(32)
    assert ContractConfigDetails().digest == ZERO_DIGEST
    assert TransmissionDetails().digest == ZERO_DIGEST
    assert NewTransmissionEvent().config_digest == ZERO_DIGEST


def test_digest_is_normalised_to_bytes():
    details = ContractConfigDetails(block=7, digest=bytearray(range(32)))
    assert details.digest == bytes(range(32))
    assert isinstance(details.digest, bytes)


@pytest.mark.parametrize(
    "make",
    [
        lambda d: OffchainContractConfig(config_digest=d),
        lambda d: ContractConfigDetails(digest=d),
        lambda d: TransmissionDetails(digest=d),
        lambda d: NewTransmissionEvent(config_digest=d),
    ],
)
@pytest.mark.parametrize("length", [0, 31, 33])
def test_wrong_digest_length_is_rejected(make, length):
    with pytest.raises(ValueError):
        make(bytes(length))


def test_transmission_defaults():
    details = TransmissionDetails()
    assert details.latest_answer == 0
    assert details.latest_timestamp == ZERO_TIME
    assert (details.epoch, details.round) == (0, 0)


def test_round_data_defaults_to_zero_time():
    data = RoundData()
    assert data.started_at == ZERO_TIME
    assert data.updated_at == ZERO_TIME


def test_contract_config_nests_default_config():
    cc = ContractConfig()
    assert cc.config_block == 0
    assert cc.config == OffchainContractConfig()


def test_default_lists_are_not_shared():
    first = OffchainContractConfig()
    second = OffchainContractConfig()
    first.signers.append(b"\x01" * 20)
    first.transmitters.append("T-account")
    assert second.signers == []
    assert second.transmitters == []


def test_billing_details_keep_values():
    bd = BillingDetails(observation_payment_gjuels=567, transmission_payment_gjuels=789)
    assert bd.observation_payment_gjuels == 567
    assert bd.transmission_payment_gjuels == 789