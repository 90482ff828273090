import hashlib
from contextlib import asynccontextmanager


class FakePaginator:
    def __init__(self, objects):
        self.objects = objects

    async def paginate(self, Bucket, Prefix):
        keys = sorted(k for k in self.objects if k.startswith(Prefix))
        # two pages to exercise pagination
        middle = len(keys) // 2
        for chunk in (keys[:middle], keys[middle:]):
            yield {"Contents": [self.objects[k] for k in chunk]}


class FakeS3:
    def __init__(self, objects=None):
        self.objects = dict(objects or {})
        self.puts = []
        self.deletes = []

    def get_paginator(self, name):
        assert name == "list_objects_v2"
        return FakePaginator(self.objects)

    async def put_object(self, Bucket, Key, Body, ContentType):
        self.puts.append((Bucket, Key, ContentType))
        self.objects[Key] = {
            "Key": Key,
            "Size": len(Body),
            "ETag": f'"{hashlib.md5(Body).hexdigest()}"',
        }

    async def delete_objects(self, Bucket, Delete):
        keys = [item["Key"] for item in Delete["Objects"]]
        self.deletes.append(keys)
        for key in keys:
            self.objects.pop(key, None)


def remote_object(key, body):
    return {"Key": key, "Size": len(body), "ETag": f'"{hashlib.md5(body).hexdigest()}"'}


class FakeCloudFormation:
    def __init__(self, outputs):
        self.outputs = outputs

    async def describe_stacks(self, StackName):
        return {
            "Stacks": [
                {
                    "StackName": StackName,
                    "Outputs": [
                        {"OutputKey": k, "OutputValue": v} for k, v in self.outputs.items()
                    ],
                }
            ]
        }


class FakeSession:
    def __init__(self, clients):
        self.clients = clients

    @asynccontextmanager
    async def client(self, service_name, region_name=None):
        yield self.clients[service_name]
