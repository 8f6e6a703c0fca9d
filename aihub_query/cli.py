import argparse
import json
import os

import requests

from aihub_query.security import sign_jwt, verify_jwt

DEFAULT_API_URL = "http://localhost:8000"
REQUEST_TIMEOUT_SECONDS = 120


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="aihub-query")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", description="run a query over datasets")
    run_parser.add_argument("--query", type=str, action="store", required=True)
    run_parser.add_argument(
        "--dataset",
        type=str,
        action="append",
        required=True,
        dest="datasets",
        help="dataset id, repeat for more than one",
    )
    run_parser.add_argument(
        "--format", type=str, choices=["json", "csv", "table"], default="json"
    )
    run_parser.add_argument("--limit", type=int, action="store")

    result_parser = subparsers.add_parser("result", description="show a query result")
    result_parser.add_argument("id", type=str)

    history_parser = subparsers.add_parser("history", description="list past queries")
    history_parser.add_argument("--limit", type=int, action="store")
    history_parser.add_argument("--offset", type=int, action="store")

    cancel_parser = subparsers.add_parser("cancel", description="cancel a running query")
    cancel_parser.add_argument("id", type=str)

    subparsers.add_parser("datasets", description="list structured datasets")

    schema_parser = subparsers.add_parser("schema", description="preview a dataset schema")
    schema_parser.add_argument("id", type=str)

    subparsers.add_parser("examples", description="list example queries")

    new_jwt_parser = subparsers.add_parser("new_jwt", add_help=False)
    new_jwt_parser.add_argument("--user", action="store", type=str, help="user id to sign")

    verify_jwt_parser = subparsers.add_parser("verify_jwt", add_help=False)
    verify_jwt_parser.add_argument(
        "--token", action="store", type=str, help="the token to verify"
    )
    return parser


class QueryClient:
    def __init__(self, api_url: str, token: str):
        self.api_url = api_url.rstrip("/") + "/api/query"
        self.headers = {"Authorization": f"Bearer {token}"}

    def _request(self, method: str, path: str, **kwargs) -> dict:
        response = requests.request(
            method,
            f"{self.api_url}{path}",
            headers=self.headers,
            timeout=REQUEST_TIMEOUT_SECONDS,
            **kwargs,
        )
        if not response.ok:
            try:
                message = response.json().get("message", response.text)
            except ValueError:
                message = response.text
            raise RuntimeError(f"request failed with {response.status_code}: {message}")
        return response.json()

    def run(self, query: str, datasets: list[str], output_format: str, limit=None):
        body = {"query": query, "datasetIds": datasets, "outputFormat": output_format}
        if limit is not None:
            body["limit"] = limit
        return self._request("POST", "/execute", json=body)

    def result(self, record_id: str):
        return self._request("GET", f"/result/{record_id}")

    def history(self, limit=None, offset=None):
        params = {}
        if limit is not None:
            params["limit"] = limit
        if offset is not None:
            params["offset"] = offset
        return self._request("GET", "/results", params=params)

    def cancel(self, record_id: str):
        return self._request("POST", f"/cancel/{record_id}")

    def datasets(self):
        return self._request("GET", "/datasets/structured")

    def schema(self, dataset_id: str):
        return self._request("GET", f"/datasets/{dataset_id}/schema")

    def examples(self):
        return self._request("GET", "/examples")


def _client() -> QueryClient:
    return QueryClient(
        os.environ.get("AIHUB_API_URL", DEFAULT_API_URL), os.environ["AIHUB_TOKEN"]
    )


def main(argv=None):
    args = build_parser().parse_args(argv)
    if args.command == "new_jwt":
        token = sign_jwt(args.user, os.environ["JWT_SECRET_KEY"])
        print("Token: " + token)
        return
    if args.command == "verify_jwt":
        user = verify_jwt(args.token, os.environ["JWT_VERIFY_KEY"])
        print("User: " + user)
        return

    client = _client()
    if args.command == "run":
        response = client.run(args.query, args.datasets, args.format, args.limit)
    elif args.command == "result":
        response = client.result(args.id)
    elif args.command == "history":
        response = client.history(args.limit, args.offset)
    elif args.command == "cancel":
        response = client.cancel(args.id)
    elif args.command == "datasets":
        response = client.datasets()
    elif args.command == "schema":
        response = client.schema(args.id)
    elif args.command == "examples":
        response = client.examples()
    else:
        raise ValueError("Invalid arguments")
    print(json.dumps(response, indent=2))


if __name__ == "__main__":
    main()
