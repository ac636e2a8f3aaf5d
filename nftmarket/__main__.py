"""Run the marketplace API: ``python -m nftmarket``."""

from nftmarket.api.app import run_server

if __name__ == "__main__":
    run_server()
