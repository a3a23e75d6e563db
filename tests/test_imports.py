import pytest

from solgas._models import ImportReference
from solgas.exceptions import (
    ImportFetchError,
    ImportResolutionError,
    ImportResolutionLimitError,
    MissingRelativeImportError,
)
from solgas.imports import ImportResolver, get_import_references, get_package_urls
from tests.conftest import FakeFetcher

OZ_IMPORT = "@openzeppelin/contracts/token/ERC20/IERC20.sol"
OZ_LATEST_URL = "https://unpkg.com/@openzeppelin/contracts@latest/token/ERC20/IERC20.sol"
OZ_UNPINNED_URL = "https://unpkg.com/@openzeppelin/contracts/token/ERC20/IERC20.sol"
OZ_GITHUB_URL = (
    "https://raw.githubusercontent.com/@openzeppelin/contracts/master/token/ERC20/IERC20.sol"
)
IERC20 = "pragma solidity ^0.8.0;\ninterface IERC20 {}"


@pytest.fixture
def resolver(fetcher):
    return ImportResolver(fetcher=fetcher)


def test_resolve_no_imports(resolver, fetcher):
    sources = {"A.sol": "pragma solidity ^0.8.0; contract A {}"}
    actual = resolver.resolve(sources)
    assert actual == sources
    assert not fetcher.calls


def test_resolve_all_imports_present(resolver, fetcher):
    sources = {
        "contracts/A.sol": 'import "./B.sol";\nimport "./lib/C.sol";\ncontract A {}',
        "contracts/B.sol": 'import "./lib/C.sol";\ncontract B {}',
        "contracts/lib/C.sol": 'import "../B.sol";\ncontract C {}',
        OZ_IMPORT: "interface IERC20 {}",
        "D.sol": f'import "{OZ_IMPORT}";\ncontract D {{}}',
    }
    actual = resolver.resolve(sources)
    assert actual == sources
    assert resolver.resolve(actual) == actual
    assert not fetcher.calls


def test_resolve_does_not_mutate_input(resolver, fetcher):
    fetcher.responses[OZ_LATEST_URL] = IERC20
    sources = {"Token.sol": f'import "{OZ_IMPORT}";\ncontract Token {{}}'}
    actual = resolver.resolve(sources)
    assert list(sources) == ["Token.sol"]
    assert actual["Token.sol"] == sources["Token.sol"]
    assert actual[OZ_IMPORT] == IERC20


def test_resolve_missing_relative_import(resolver, fetcher):
    sources = {"A.sol": 'import "./B.sol"; contract A {}'}
    with pytest.raises(MissingRelativeImportError) as info:
        resolver.resolve(sources)

    err = info.value
    assert err.import_path == "./B.sol"
    assert err.source_id == "A.sol"
    assert err.expected_key == "B.sol"
    assert "./B.sol" in str(err)
    assert "'B.sol'" in str(err)

    # Relative imports are never fetched.
    assert not fetcher.calls


def test_resolve_missing_relative_import_in_folder(resolver):
    sources = {"contracts/sub/A.sol": 'import "../B.sol"; contract A {}'}
    with pytest.raises(MissingRelativeImportError) as info:
        resolver.resolve(sources)

    assert info.value.expected_key == "contracts/B.sol"


def test_resolve_package_import_mirror_order(resolver, fetcher):
    """
    Show the unpinned and source-control mirrors are only tried
    after the pinned mirror fails.
    """
    fetcher.responses[OZ_GITHUB_URL] = IERC20
    sources = {"Token.sol": f'import {{IERC20}} from "{OZ_IMPORT}";\ncontract Token {{}}'}
    actual = resolver.resolve(sources)
    assert actual[OZ_IMPORT] == IERC20
    assert fetcher.calls == [OZ_LATEST_URL, OZ_UNPINNED_URL, OZ_GITHUB_URL]


def test_resolve_package_import_first_mirror_wins(resolver, fetcher):
    fetcher.responses[OZ_LATEST_URL] = IERC20
    fetcher.responses[OZ_UNPINNED_URL] = "interface Other {}"
    sources = {"Token.sol": f'import "{OZ_IMPORT}";\ncontract Token {{}}'}
    actual = resolver.resolve(sources)
    assert actual[OZ_IMPORT] == IERC20
    assert fetcher.calls == [OZ_LATEST_URL]


def test_resolve_package_import_all_mirrors_fail(resolver, fetcher):
    sources = {"Token.sol": f'import "{OZ_IMPORT}";\ncontract Token {{}}'}
    with pytest.raises(ImportFetchError) as info:
        resolver.resolve(sources)

    err = info.value
    assert err.import_path == OZ_IMPORT
    assert err.source_id == "Token.sol"
    assert err.status_code == 404
    assert err.__cause__ is not None
    assert OZ_GITHUB_URL in str(err.__cause__)
    assert len(fetcher.calls) == 3


def test_resolve_custom_mirrors(fetcher):
    url = "https://mirror.test/@openzeppelin/contracts/token/ERC20/IERC20.sol"
    fetcher.responses[url] = IERC20
    mirrors = ["https://mirror.test/{package}/{path}"]
    resolver = ImportResolver(fetcher=fetcher, package_mirrors=mirrors)
    actual = resolver.resolve({"Token.sol": f'import "{OZ_IMPORT}";'})
    assert actual[OZ_IMPORT] == IERC20
    assert fetcher.calls == [url]


def test_resolve_remote_import(resolver, fetcher):
    url = "https://example.com/contracts/Remote.sol"
    fetcher.responses[url] = "contract Remote {}"
    actual = resolver.resolve({"A.sol": f'import "{url}";\ncontract A {{}}'})
    assert actual[url] == "contract Remote {}"
    assert fetcher.calls == [url]


def test_resolve_remote_import_not_found(resolver, fetcher):
    url = "https://example.com/contracts/Missing.sol"
    with pytest.raises(ImportFetchError) as info:
        resolver.resolve({"A.sol": f'import "{url}";'})

    assert info.value.status_code == 404
    assert "404" in str(info.value)
    assert url in str(info.value)


def test_resolve_transitive_imports(resolver, fetcher):
    """
    Imports of fetched files are resolved in a later pass.
    """
    erc20 = "@openzeppelin/contracts/token/ERC20/ERC20.sol"
    context = "@openzeppelin/contracts/utils/Context.sol"
    fetcher.responses.update(
        {
            "https://unpkg.com/@openzeppelin/contracts@latest/token/ERC20/ERC20.sol": (
                f'import "{context}";\ncontract ERC20 {{}}'
            ),
            "https://unpkg.com/@openzeppelin/contracts@latest/utils/Context.sol": (
                "abstract contract Context {}"
            ),
        }
    )
    actual = resolver.resolve({"Token.sol": f'import "{erc20}";\ncontract Token {{}}'})
    assert list(actual) == ["Token.sol", erc20, context]


def test_resolve_relative_import_in_fetched_source_must_be_provided(resolver, fetcher):
    erc20 = "@openzeppelin/contracts/token/ERC20/ERC20.sol"
    url = "https://unpkg.com/@openzeppelin/contracts@latest/token/ERC20/ERC20.sol"
    fetcher.responses[url] = 'import "./IERC20.sol";\ncontract ERC20 {}'
    with pytest.raises(MissingRelativeImportError) as info:
        resolver.resolve({"Token.sol": f'import "{erc20}";'})

    assert info.value.source_id == erc20
    assert info.value.expected_key == "@openzeppelin/contracts/token/ERC20/IERC20.sol"


def test_resolve_relative_import_in_remote_source(resolver, fetcher):
    url = "https://example.com/contracts/Remote.sol"
    fetcher.responses[url] = 'import "./Base.sol";\ncontract Remote {}'
    with pytest.raises(MissingRelativeImportError) as info:
        resolver.resolve({"A.sol": f'import "{url}";'})

    assert info.value.source_id == url
    assert info.value.expected_key == "https://example.com/contracts/Base.sol"


def test_resolve_fetches_each_import_once(resolver, fetcher):
    fetcher.responses[OZ_LATEST_URL] = IERC20
    sources = {
        "A.sol": f'import "{OZ_IMPORT}";\ncontract A {{}}',
        "B.sol": f'import "{OZ_IMPORT}";\ncontract B {{}}',
    }
    resolver.resolve(sources)
    assert fetcher.calls == [OZ_LATEST_URL]


def test_resolve_import_cycle_converges(resolver, fetcher):
    a = "pkg-a/A.sol"
    b = "pkg-b/B.sol"
    fetcher.responses.update(
        {
            "https://unpkg.com/pkg-a@latest/A.sol": f'import "{b}";\ncontract A {{}}',
            "https://unpkg.com/pkg-b@latest/B.sol": f'import "{a}";\ncontract B {{}}',
        }
    )
    actual = resolver.resolve({"Main.sol": f'import "{a}";'})
    assert set(actual) == {"Main.sol", a, b}


def test_resolve_never_converges():
    """
    Every fetched file imports another package that has not been seen yet,
    so resolution hits the pass limit instead of hanging.
    """

    class EndlessFetcher(FakeFetcher):
        def __call__(self, url: str) -> str:
            self.calls.append(url)
            number = int(url.split("/pkg")[1].split("@")[0])
            return f'import "pkg{number + 1}/Next.sol";\ncontract C{number} {{}}'

    fetcher = EndlessFetcher()
    resolver = ImportResolver(fetcher=fetcher, max_passes=5)
    with pytest.raises(ImportResolutionLimitError) as info:
        resolver.resolve({"Main.sol": 'import "pkg0/Next.sol";'})

    assert info.value.max_passes == 5
    assert isinstance(info.value, ImportResolutionError)
    assert not isinstance(info.value, ImportFetchError)
    assert len(fetcher.calls) == 5


def test_resolve_default_pass_limit(resolver):
    assert resolver.max_passes == 20


def test_get_import_references():
    sources = {"A.sol": 'import "./B.sol";\nimport "pkg/C.sol";', "B.sol": "contract B {}"}
    actual = get_import_references(sources)
    assert actual == [
        ImportReference(source_id="A.sol", import_path="./B.sol"),
        ImportReference(source_id="A.sol", import_path="pkg/C.sol"),
    ]


def test_get_package_urls():
    reference = ImportReference(source_id="A.sol", import_path="solmate/src/tokens/ERC20.sol")
    actual = get_package_urls(reference, ["https://unpkg.com/{package}@latest/{path}"])
    assert actual == ["https://unpkg.com/solmate@latest/src/tokens/ERC20.sol"]
