import argparse
import json
import logging
import os
import sys
from dataclasses import asdict
from typing import Optional

from mcp.server.fastmcp import FastMCP

from backends.local import LocalBackend
from backends.registry import BackendList, backend_list_from_json
from backends.s3 import S3Backend
from search import SearchError, execute_search
from web import create_routes

logger = logging.getLogger(__name__)

# MCP 서버 초기화
# mcp-proxy가 /mcp 경로로 SSE 연결을 시도하므로 sse_path를 /mcp로 설정합니다.
mcp = FastMCP("tfstate-browser", sse_path="/mcp")

# 전역 백엔드 목록
backends = None

# 전역 설정 (CLI 인자)
global_config_path = None
global_local_dirs = []
global_bucket_name = None


def parse_local_dir(value: str) -> tuple[str, str]:
    """NAME=PATH 형식의 --dir 인자를 (이름, 경로)로 분리합니다."""
    name, sep, path = value.partition("=")
    if not sep or not name or not path:
        raise ValueError(f"Invalid --dir value '{value}', expected NAME=PATH.")
    return name, path


def get_backends() -> BackendList:
    """
    전역 백엔드 목록을 반환합니다.
    없으면 CLI 인자 또는 환경변수를 사용하여 초기화합니다.

    우선순위: --config > TFSTATE_BACKENDS_CONFIG > --dir > --bucket > TFSTATE_BUCKET_NAME
    """
    global backends
    if backends is None:
        # 1. JSON 설정 파일
        config_path = global_config_path or os.environ.get("TFSTATE_BACKENDS_CONFIG")
        if config_path:
            try:
                with open(config_path, encoding="utf-8") as f:
                    loaded = backend_list_from_json(f)
            except OSError as e:
                raise ValueError(f"Could not read backend config '{config_path}': {e.strerror or e}")
            if not len(loaded):
                raise ValueError(f"No backends configured in '{config_path}'.")
            backends = loaded
            return backends

        loaded = BackendList()

        # 2. 로컬 디렉터리
        for name, path in global_local_dirs:
            loaded.add_state(name, LocalBackend(path))

        # 3. 단일 S3 버킷
        if not len(loaded):
            bucket_name = global_bucket_name or os.environ.get("TFSTATE_BUCKET_NAME")
            if not bucket_name:
                raise ValueError(
                    "TFSTATE_BUCKET_NAME environment variable is not set and no "
                    "--bucket, --dir or --config argument provided."
                )

            # AWS 자격증명 처리 로직
            profile_name = os.environ.get("AWS_PROFILE")
            aws_access_key = os.environ.get("AWS_ACCESS_KEY_ID")

            if not profile_name and not aws_access_key:
                profile_name = "default"

            loaded.add_state(bucket_name, S3Backend(bucket_name=bucket_name, profile_name=profile_name))

        backends = loaded

    return backends


@mcp.tool()
def list_backends() -> str:
    """
    브라우징 가능한 tfstate 백엔드 이름 목록을 등록 순서대로 반환합니다.
    """
    try:
        names = get_backends().names()
        return json.dumps({"backends": names}, indent=2, ensure_ascii=False)
    except Exception as e:
        return f"Error: {str(e)}"


@mcp.tool()
def search_tfstate(backend: str = "", spath: str = ".") -> str:
    """
    백엔드의 한 디렉터리를 검색하여 하위 디렉터리와 .tfstate 파일의 output을 반환합니다.

    Args:
        backend: 백엔드 이름 (선택사항, 기본값: 첫 번째 백엔드)
        spath: 검색할 경로 (선택사항, 예: 'infra/network', 기본값: 루트)
    """
    try:
        state_backends = get_backends()
        names = state_backends.names()
        backend = backend or names[0]
        spath = spath or "."

        state_backend = state_backends.get_state(backend)
        if state_backend is None:
            raise ValueError(f'backend "{backend}" not found')

        result = {
            "backend": backend,
            "spath": spath,
            **asdict(execute_search(state_backend, spath, backend)),
        }

        return json.dumps(result, indent=2, ensure_ascii=False)
    except (ValueError, SearchError) as e:
        return f"Error: {str(e)}"


create_routes(mcp, get_backends)


def main(argv: Optional[list[str]] = None) -> None:
    global global_config_path, global_local_dirs, global_bucket_name

    parser = argparse.ArgumentParser(description="Terraform tfstate 브라우저 (웹 UI + MCP 서버)")
    parser.add_argument(
        "--transport",
        type=str,
        default="sse",
        choices=["streamable-http", "sse", "stdio"],
        help="전송 프로토콜 (기본값: sse, 웹 UI는 stdio에서 제공되지 않음)",
    )
    parser.add_argument("--host", type=str, help="바인딩할 호스트")
    parser.add_argument("--port", type=int, help="바인딩할 포트")
    parser.add_argument(
        "--config",
        type=str,
        help="백엔드 JSON 설정 파일 경로 (환경변수 TFSTATE_BACKENDS_CONFIG보다 우선함)",
    )
    parser.add_argument(
        "--dir",
        action="append",
        default=[],
        metavar="NAME=PATH",
        help="로컬 디렉터리 백엔드 (여러 번 지정 가능)",
    )
    parser.add_argument(
        "--bucket",
        type=str,
        help="S3 버킷 이름 (환경변수 TFSTATE_BUCKET_NAME보다 우선함)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="로그 레벨 (기본값: INFO)",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        stream=sys.stderr,
        level=args.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    global_config_path = args.config
    try:
        global_local_dirs = [parse_local_dir(value) for value in args.dir]
    except ValueError as e:
        parser.error(str(e))

    # CLI 인자로 버킷 이름 설정
    if args.bucket:
        global_bucket_name = args.bucket
        logger.info("Using bucket '%s' from CLI argument.", args.bucket)
    elif os.environ.get("TFSTATE_BUCKET_NAME"):
        logger.info("Using bucket '%s' from environment variable.", os.environ.get("TFSTATE_BUCKET_NAME"))

    # 디버그 정보 출력
    logger.debug("AWS_PROFILE=%s", os.environ.get("AWS_PROFILE", "Not Set"))
    logger.debug("AWS_ACCESS_KEY_ID=%s", "Set" if os.environ.get("AWS_ACCESS_KEY_ID") else "Not Set")

    # 백엔드가 하나도 없으면 시작하지 않음
    try:
        names = get_backends().names()
    except ValueError as e:
        logger.error("Could not configure backends: %s", e)
        sys.exit(1)
    logger.info("Serving backends: %s", ", ".join(names))

    if args.host:
        mcp.settings.host = args.host
    if args.port:
        mcp.settings.port = args.port

    mcp.run(transport=args.transport)


if __name__ == "__main__":
    main()
