import aioboto3
import io
import os
from uuid import uuid4
from botocore.exceptions import ClientError, BotoCoreError
import logging

from .errors import UpstreamFailure

logger = logging.getLogger(__name__)

LICENSES_FOLDER = "licenses"
SIGNATURES_FOLDER = "signatures"
VEHICLES_FOLDER = "vehicles"


class S3FileStore:
    """Хранилище файлов: фото водительских прав, подписи, фото автомобилей."""

    def __init__(self):
        self.bucket_name = os.getenv('S3_BUCKET_NAME', 'van-rental-files')
        self.region = os.getenv('AWS_REGION', 'eu-central-1')
        self.endpoint_url = os.getenv('S3_ENDPOINT_URL')  # API endpoint, None для AWS
        self.access_domain = os.getenv('S3_ACCESS_DOMAIN')  # домен для публичных ссылок
        self.session = aioboto3.Session(
            aws_access_key_id=os.getenv('AWS_ACCESS_KEY_ID'),
            aws_secret_access_key=os.getenv('AWS_SECRET_ACCESS_KEY'),
            region_name=self.region
        )
        self._bucket_checked = False

    def _client(self):
        return self.session.client('s3', endpoint_url=self.endpoint_url)

    async def _ensure_bucket_exists(self, s3_client):
        if self._bucket_checked:
            return
        try:
            await s3_client.head_bucket(Bucket=self.bucket_name)
        except ClientError as e:
            if e.response['Error']['Code'] not in ('404', 'NoSuchBucket'):
                raise
            logger.info(f"Bucket {self.bucket_name} not found, creating...")
            await s3_client.create_bucket(
                Bucket=self.bucket_name,
                CreateBucketConfiguration={'LocationConstraint': self.region}
            )
            logger.info(f"Bucket {self.bucket_name} created successfully")
        self._bucket_checked = True

    def get_file_url(self, file_key: str) -> str:
        if self.access_domain:
            return f"https://{self.access_domain}/{file_key}"
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket_name}/{file_key}"
        return f"https://{self.bucket_name}.s3.{self.region}.amazonaws.com/{file_key}"

    @staticmethod
    def build_key(folder: str, filename: str) -> str:
        file_extension = filename.rsplit('.', 1)[-1].lower() if '.' in filename else 'bin'
        return f"{folder}/{uuid4()}.{file_extension}"

    @staticmethod
    def get_content_type(file_extension: str) -> str:
        content_types = {
            'jpg': 'image/jpeg',
            'jpeg': 'image/jpeg',
            'png': 'image/png',
            'gif': 'image/gif',
            'webp': 'image/webp',
            'svg': 'image/svg+xml',
            'bmp': 'image/bmp',
            'pdf': 'application/pdf',
        }
        return content_types.get(file_extension.lower(), 'application/octet-stream')

    async def upload_file(self, file, filename: str, folder: str) -> str:
        """Загружает файл (file-like или bytes) и возвращает публичную ссылку."""
        if isinstance(file, (bytes, bytearray)):
            file = io.BytesIO(file)
        file_key = self.build_key(folder, filename)

        try:
            async with self._client() as s3_client:
                await self._ensure_bucket_exists(s3_client)
                if hasattr(file, 'seek'):
                    file.seek(0)
                await s3_client.upload_fileobj(
                    file,
                    self.bucket_name,
                    file_key,
                    ExtraArgs={
                        'ACL': 'public-read',
                        'ContentType': self.get_content_type(file_key.rsplit('.', 1)[-1])
                    }
                )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 upload error for {filename}: {e}")
            raise UpstreamFailure("File storage is unavailable") from e

        file_url = self.get_file_url(file_key)
        logger.info(f"File uploaded successfully: {file_url}")
        return file_url

    async def delete_file(self, file_url: str):
        file_key = '/'.join(file_url.split('/')[-2:])
        try:
            async with self._client() as s3_client:
                await s3_client.delete_object(Bucket=self.bucket_name, Key=file_key)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 delete error for {file_key}: {e}")
            raise UpstreamFailure("File storage is unavailable") from e
        logger.info(f"File deleted from storage: {file_key}")


file_store = S3FileStore()


async def upload_file(file, filename: str, folder: str) -> str:
    return await file_store.upload_file(file, filename, folder)


async def delete_file(file_url: str):
    return await file_store.delete_file(file_url)
