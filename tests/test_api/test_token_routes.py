"""
Tests for the token registry API routes.
"""

from tests.factories import BUYER, LEDGER_ADDRESS, OTHER_CONTRACT, SELLER, STRANGER, TOKEN_CONTRACT

ZERO = "0x" + "0" * 40


def as_caller(address: str) -> dict[str, str]:
    return {"X-Caller-Address": address}


class TestTokenRoutes:
    """Tests for minting, approving and inspecting tokens."""

    def test_token_contracts(self, client):
        assert client.get("/tokens").json() == {"token_contracts": [TOKEN_CONTRACT]}

    def test_mint_and_inspect(self, client):
        response = client.post(
            f"/tokens/{TOKEN_CONTRACT}/mint",
            json={"token_uri": "ipfs://cat.json"},
            headers=as_caller(SELLER),
        )

        assert response.status_code == 201
        assert response.json() == {"token_contract": TOKEN_CONTRACT, "token_id": 1}

        token = client.get(f"/tokens/{TOKEN_CONTRACT}/1").json()
        assert token == {
            "token_contract": TOKEN_CONTRACT,
            "token_id": 1,
            "owner": SELLER,
            "approved": ZERO,
            "token_uri": "ipfs://cat.json",
        }

    def test_tokens_of_owner(self, client):
        for _ in range(2):
            client.post(f"/tokens/{TOKEN_CONTRACT}/mint", json={"token_uri": "x"}, headers=as_caller(SELLER))

        data = client.get(f"/tokens/{TOKEN_CONTRACT}/owners/{SELLER}").json()

        assert data["token_ids"] == [1, 2]

    def test_approve(self, client):
        client.post(f"/tokens/{TOKEN_CONTRACT}/mint", json={"token_uri": "x"}, headers=as_caller(SELLER))

        response = client.post(
            f"/tokens/{TOKEN_CONTRACT}/1/approve",
            json={"spender": LEDGER_ADDRESS},
            headers=as_caller(SELLER),
        )

        assert response.status_code == 204
        assert client.get(f"/tokens/{TOKEN_CONTRACT}/1").json()["approved"] == LEDGER_ADDRESS

    def test_approve_by_stranger_is_forbidden(self, client):
        client.post(f"/tokens/{TOKEN_CONTRACT}/mint", json={"token_uri": "x"}, headers=as_caller(SELLER))

        response = client.post(
            f"/tokens/{TOKEN_CONTRACT}/1/approve",
            json={"spender": STRANGER},
            headers=as_caller(STRANGER),
        )

        assert response.status_code == 403
        assert response.json()["error_type"] == "TransferNotAuthorizedError"

    def test_approval_for_all(self, client, api_registry):
        response = client.post(
            f"/tokens/{TOKEN_CONTRACT}/approval-for-all",
            json={"operator": BUYER, "approved": True},
            headers=as_caller(SELLER),
        )

        assert response.status_code == 204
        assert BUYER in api_registry._operator_approvals[SELLER]

    def test_self_operator_is_bad_request(self, client):
        response = client.post(
            f"/tokens/{TOKEN_CONTRACT}/approval-for-all",
            json={"operator": SELLER},
            headers=as_caller(SELLER),
        )

        assert response.status_code == 400

    def test_unknown_token_is_404(self, client):
        response = client.get(f"/tokens/{TOKEN_CONTRACT}/99")

        assert response.status_code == 404
        assert response.json()["error_type"] == "TokenNotFoundError"

    def test_unknown_contract(self, client):
        response = client.post(
            f"/tokens/{OTHER_CONTRACT}/mint",
            json={"token_uri": "x"},
            headers=as_caller(SELLER),
        )

        assert response.status_code == 400
        assert response.json()["error_type"] == "UnknownTokenContractError"

    def test_mint_requires_caller(self, client):
        response = client.post(f"/tokens/{TOKEN_CONTRACT}/mint", json={"token_uri": "x"})

        assert response.status_code == 401
