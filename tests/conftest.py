import pytest  # noqa
import lorecompact
import os


@pytest.fixture(scope="function", autouse=True)
def settestdefaults(tmp_path):
    lorecompact.can_network = False
    lorecompact.MAIN_CONFIG = dict(lorecompact.DEFAULT_CONFIG)
    lorecompact.REQSESSION = None
    lorecompact._CACHE_CLEANED = False
    os.environ['XDG_DATA_HOME'] = str(tmp_path)
    os.environ['XDG_CACHE_HOME'] = str(tmp_path)


@pytest.fixture(scope="function")
def sampledir(request):
    return os.path.join(request.fspath.dirname, 'samples')
