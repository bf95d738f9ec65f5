import pytest
from botocore.exceptions import ClientError

from mealapp.exceptions import SignedUrlError
from mealapp.services.storage import S3UrlSigner, storage_key


class DummyS3:
    def __init__(self, error=None):
        self.error = error
        self.presign_calls = []

    def generate_presigned_url(self, operation, Params, ExpiresIn):
        self.presign_calls.append((operation, Params, ExpiresIn))
        if self.error:
            raise self.error
        return f"https://s3.test/{Params['Bucket']}/{Params['Key']}?X-Amz-Expires={ExpiresIn}"


def test_storage_key_accepts_uri_and_bucket_prefixed_forms():
    assert storage_key("user-1/a.jpg", "meal-images") == "user-1/a.jpg"
    assert storage_key("s3://meal-images/user-1/a.jpg", "meal-images") == "user-1/a.jpg"
    assert storage_key("meal-images/user-1/a.jpg", "meal-images") == "user-1/a.jpg"
    assert storage_key("/user-1/a.jpg", "meal-images") == "user-1/a.jpg"


def test_sign_uses_bucket_and_expiry_from_settings(cfg):
    dummy_s3 = DummyS3()
    signer = S3UrlSigner(cfg, client=dummy_s3)

    url = signer.sign("user-1/a.jpg")

    assert url.endswith(f"X-Amz-Expires={cfg.SIGNED_URL_EXPIRES_SECONDS}")
    assert dummy_s3.presign_calls == [
        ("get_object", {"Bucket": cfg.S3_BUCKET_NAME, "Key": "user-1/a.jpg"}, cfg.SIGNED_URL_EXPIRES_SECONDS)
    ]


def test_sign_rejects_empty_path(cfg):
    signer = S3UrlSigner(cfg, client=DummyS3())
    with pytest.raises(SignedUrlError):
        signer.sign("")


def test_sign_wraps_client_errors(cfg):
    error = ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "GetObject")
    signer = S3UrlSigner(cfg, client=DummyS3(error=error))
    with pytest.raises(SignedUrlError):
        signer.sign("user-1/a.jpg")
